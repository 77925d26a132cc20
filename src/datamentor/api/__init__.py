"""
Expose the FastAPI application instance.

Importing this module creates the application and registers all routes.
The service can be started with Uvicorn directly or with the ``-m``
invocation, which reads ``PORT`` from the environment:

```sh
python -m datamentor.api
```
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
