# SPDX-License-Identifier: AGPL-3.0-or-later
# Copyright (C) 2024 docresolve contributors

__version__ = "0.4.0"
