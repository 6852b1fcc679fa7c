# -----------------------------------------------------------------------------
# APPSODY
# -----------------------------------------------------------------------------
# Developer CLI for stack-based applications: scaffold a project from a stack
# template, iterate inside a dev container, build an image and deploy it to
# Kubernetes through the Appsody operator.
# -----------------------------------------------------------------------------

__version__ = "0.6.0"
