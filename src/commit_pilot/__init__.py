"""Drive an interactive commit-message tool and confirm its commits."""

__version__ = "0.1.0"
