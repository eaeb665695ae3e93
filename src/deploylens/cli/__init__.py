"""DeployLens command-line interface."""
