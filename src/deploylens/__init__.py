"""DeployLens: deployment risk scoring, incident forensics and alert correlation."""

__version__ = "0.1.0"
