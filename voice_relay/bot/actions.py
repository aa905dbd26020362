"""
Action registry and dispatcher.

Actions are the structured requests the Turn Engine may return instead of a
text reply. Each action declares a pydantic arguments model; its JSON schema is
advertised to the language model as a function tool, and the same model
validates the arguments before the handler runs. Unknown names are rejected
here, not by the Turn Engine.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from voice_relay.config.constants import LOGGER_NAME
from voice_relay.errors import ActionArgumentsError, UnknownActionError
from voice_relay.models.message_schemas import ActionRequest

logger = logging.getLogger(LOGGER_NAME)

ActionHandler = Callable[[BaseModel], Awaitable[Optional[str]]]


@dataclass
class Action:
    """A named action with its argument schema and handler."""

    name: str
    description: str
    arguments_model: Type[BaseModel]
    handler: ActionHandler

    def tool_schema(self) -> Dict[str, Any]:
        """Function tool definition for the chat completions API."""
        parameters = self.arguments_model.model_json_schema()
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ActionRegistry:
    """Registry of the actions the language model may request."""

    def __init__(self):
        self._actions: Dict[str, Action] = {}

    def register(self, action: Action) -> None:
        if action.name in self._actions:
            logger.warning(f"Action {action.name} already registered, overwriting")
        self._actions[action.name] = action
        logger.info(f"Registered action: {action.name}")

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)

    def names(self) -> List[str]:
        return list(self._actions)

    def tool_schemas(self) -> List[Dict[str, Any]]:
        return [action.tool_schema() for action in self._actions.values()]

    async def dispatch(self, request: ActionRequest) -> str:
        """
        Validate the request arguments and run the action handler.

        Args:
            request: Action request returned by the Turn Engine

        Returns:
            A short status text for the user

        Raises:
            UnknownActionError: If no action is registered under request.name
            ActionArgumentsError: If the arguments do not match the action schema
        """
        action = self._actions.get(request.name)
        if action is None:
            raise UnknownActionError(request.name)

        try:
            arguments = action.arguments_model.model_validate(request.arguments)
        except ValidationError as e:
            raise ActionArgumentsError(f"Invalid arguments for {request.name}: {e}") from e

        logger.info(f"Dispatching action {request.name} with arguments: {request.arguments}")
        status = await action.handler(arguments)
        return status or f"Done: {request.name}."


# Home automation actions
class SetHueLightsArguments(BaseModel):
    room: str = Field(..., description="Which room, e.g. 'living', 'bedroom', 'kitchen'")
    on: bool = Field(..., description="true to turn lights on, false to turn lights off")
    color: str = Field("white", description="Optional color name (e.g. 'red', 'blue', 'white'). Defaults to white")


class LightController:
    """
    Light state holder used by the setHueLights action.

    Records the requested state per room; a bridge integration can subclass
    it and override apply().
    """

    def __init__(self):
        self.rooms: Dict[str, SetHueLightsArguments] = {}

    async def apply(self, request: SetHueLightsArguments) -> None:
        self.rooms[request.room] = request
        logger.info(
            f"Lights in {request.room} set to {'on' if request.on else 'off'}"
            + (f" ({request.color})" if request.on else "")
        )

    async def set_hue_lights(self, arguments: SetHueLightsArguments) -> str:
        await self.apply(arguments)
        state = "on" if arguments.on else "off"
        if arguments.on and arguments.color != "white":
            return f"Turned the {arguments.room} lights {state} ({arguments.color})."
        return f"Turned the {arguments.room} lights {state}."


def build_default_registry(lights: Optional[LightController] = None) -> ActionRegistry:
    """Registry with the built-in home automation actions."""
    lights = lights or LightController()
    registry = ActionRegistry()
    registry.register(
        Action(
            name="setHueLights",
            description="Turn on/off or set color of a certain room's lights",
            arguments_model=SetHueLightsArguments,
            handler=lights.set_hue_lights,
        )
    )
    return registry
