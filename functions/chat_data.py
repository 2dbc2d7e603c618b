# functions/chat_data.py
"""
chat_data tool: character stats and inventories for the current chat.
The chat is taken from the turn's scope, the model never passes it.
"""

import logging

from kiew.chat.chat_data import ChatDataRequest, VALID_ACTIONS, get_chat_data_store
from kiew.chat.function_manager import scope_chat_id

logger = logging.getLogger(__name__)

ENABLED = True

AVAILABLE_FUNCTIONS = [
    'chat_data',
]

TOOLS = [
    {
        "type": "function",
        "is_local": True,
        "function": {
            "name": "chat_data",
            "description": (
                "Character data for this chat: stores and retrieves any property for any character.\n"
                "Data points are addressed as character.property (e.g. hel.hp, hel.inventory). "
                "Only letters, digits, '_' and '-' are allowed on either side of the dot; keep properties lower case.\n"
                "Actions:\n"
                "- get: read a property\n"
                "- set: create or overwrite a property with a text value\n"
                "- add: put 'quantity' of item 'value' into a list property such as an inventory\n"
                "- remove: take 'quantity' of item 'value' out of a list property\n"
                "- delete: remove a property, or a whole character when path is just the character name\n"
                "- show: list everything stored for this chat"
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "action": {
                        "type": "string",
                        "enum": VALID_ACTIONS,
                        "description": "What to do: get, set, add, remove, delete or show"
                    },
                    "path": {
                        "type": "string",
                        "description": "character.property, or a bare character name for delete. Not used by show."
                    },
                    "value": {
                        "type": "string",
                        "description": "New value for set; item name for add and remove"
                    },
                    "quantity": {
                        "type": "integer",
                        "minimum": 1,
                        "description": "How many of the item to add or remove (default 1)"
                    }
                },
                "required": ["action"]
            }
        }
    },
]


def execute(function_name, arguments, config):
    if function_name != "chat_data":
        return f"Unknown function: {function_name}", False

    chat_id = scope_chat_id.get()
    if chat_id is None:
        return "No active chat for chat_data", False

    request = ChatDataRequest.from_arguments(arguments)
    return get_chat_data_store().run(chat_id, request), True
