"""Orchestration core: graph model, resolvers, executor and pools."""
