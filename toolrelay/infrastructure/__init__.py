"""Infrastructure layer - adapters for config, MCP servers, web search and model transports."""
