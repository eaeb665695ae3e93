"""HTTP routes for the DeployLens API."""
