"""
Command-line interface for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later
