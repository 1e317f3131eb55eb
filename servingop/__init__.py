"""Install and reconcile Knative Serving from a manifest of resources against an in-memory cluster."""

__version__ = "0.8.0"