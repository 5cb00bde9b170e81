"""Cloud function providers for ``!fn`` references (``aws.*``, ``k8s.*``)."""
