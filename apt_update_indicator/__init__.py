"""
Apt Update Indicator - Core Package

Watches apt for pending upgrades and new, obsolete, residual and
autoremovable packages, and reports a single status to a presenter.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

__version__ = "1.0.0"
__author__ = "Apt Update Indicator contributors"
