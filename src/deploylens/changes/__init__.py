"""Change risk scoring and deployment/alert correlation.

Scores commits for suspiciousness, tracks live deployments through their
lifecycle and correlates them with monitoring alerts.
"""
