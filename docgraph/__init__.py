"""docgraph: build, paginate and focus graphs of interlinked markdown documents."""

__version__ = "0.3.0"
