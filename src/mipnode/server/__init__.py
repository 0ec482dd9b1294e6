# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""HTTP server for a MIP node: protocol endpoints, admin API and health."""
