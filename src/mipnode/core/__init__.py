# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Ambient infrastructure shared by every layer: settings, logging, errors."""
