"""Infrastructure helpers used by the application lifespan."""
