from energy_api.api.app import EnergyServer, create_app
from energy_api.api.handler import EndpointHandler, HandlerResult

__all__ = ["EnergyServer", "create_app", "EndpointHandler", "HandlerResult"]
