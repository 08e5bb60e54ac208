# Models package initialization
# Table models use factory pattern - import create_*_model, not the classes directly
from .passes import Pass, PassStatus, create_pass_model
from .room import create_room_model
from .user import create_user_model

__all__ = ['Pass', 'PassStatus', 'create_pass_model', 'create_room_model', 'create_user_model']
