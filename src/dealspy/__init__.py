"""DealSpy price discovery pipeline.

Finds the current lowest price for tracked products through a text-generation
service, records price drops and pushes alerts to the users watching them.
"""

__version__ = "0.1.0"
