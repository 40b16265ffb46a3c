"""AWS EC2 backend for imageroll.

Example:
    from imageroll.providers.aws import AWS

    backend = await AWS(access_key_id=..., secret_access_key=..., region="us-east-1").create_backend()
"""

from imageroll.providers.aws.config import AWS

__all__ = ["AWS"]
