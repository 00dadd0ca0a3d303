"""Poll trigger for a continuous-delivery controller.

Scans cluster deployments and keeps a watch registered for every image
of the deployments that opted in to poll-based updates.
"""

__version__ = "0.1.0"
