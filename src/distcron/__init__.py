"""
distcron - Lock-guarded periodic jobs for replicated services.

Lets several replicas of one service run the same recurring job while a
shared lock store makes sure only one of them executes each firing.
"""

__version__ = "0.1.0"
__app_name__ = "distcron"
