"""Form Builder Engine — errors, config, context, events, plugins, security, logging."""
