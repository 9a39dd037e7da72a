"""Feed module: engagement scoring and the for-you, following and trending feeds."""
