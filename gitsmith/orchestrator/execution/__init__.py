"""Job execution: the external edit collaborator and git workflows around it."""
