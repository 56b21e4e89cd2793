"""HTTP access to the custody API from worker processes."""
from workers.api.client import APIClient, get_api_client

__all__ = ['APIClient', 'get_api_client']
