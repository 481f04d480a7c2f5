# dryer_control/chat/__init__.py
