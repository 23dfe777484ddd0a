"""Dispatcher, session store and the step machinery shared by every flow."""
