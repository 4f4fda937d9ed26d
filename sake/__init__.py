"""sake - a personal registry for Rake-style tasks."""

__version__ = "0.2.0"
