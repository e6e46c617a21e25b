"""MCP tool registrations for the gallery build pipeline"""
