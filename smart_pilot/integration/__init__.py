"""External collaborators: control API, subscription store, system proxy."""
