"""
Cloudwarden — credential health checks and automatic instance replenishment
for DigitalOcean, Linode and Azure accounts.
"""

__version__ = "0.3.0"
