"""Remote sources and the synchronizer that drains them."""
