"""Pull request builder: reconcile open GitHub pull requests and trigger builds."""

__version__ = "0.1.0"
