"""Memory layers and their coordination.

Modules:
    knowledge    System 1: concepts, pattern library, history, preferences
    reasoning    System 2: traces, decision trees, enhancements, reflections
    engine       Query routing, event queue, result cache
    coordinator  Cross-layer sync, conflict resolution, optimization
    session      Conversation context window
    snapshot     JSON persistence of both stores
    library      Pattern library markdown files
"""
