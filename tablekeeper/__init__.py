"""
                TableKeeper

Restaurant orders and table reservations backed by a primary database
with a local fallback store that keeps accepting writes during outages
and converges once the primary is back.

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
