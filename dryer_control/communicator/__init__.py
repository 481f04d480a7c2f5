# dryer_control/communicator/__init__.py
