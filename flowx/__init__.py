"""
flowx Client Synchronization Package

Directory Structure:
├── domain/            # Pure rules: entities, validation, paths, errors, events
│   ├── paths.py       # Materialized folder paths and rename/move planning
│   └── validation.py  # Name, colour, tag, date and depth validators
├── store/             # Remote reactive store boundary
│   ├── adapters.py    # Entity Store Adapter used by folders and projects
│   └── memory.py      # In-memory reference implementation of the remote store
├── application/       # Stateful client components
│   ├── optimistic.py  # Optimistic Mutation Engine
│   ├── folder_manager.py
│   ├── project_manager.py
│   └── canvas_sync.py # Canvas Synchronization State Machine
├── routers/           # FastAPI routes exposing the reference store
├── schemas/           # Pydantic models for HTTP requests/responses
└── config.py          # Settings and logging setup

State Clarification:
1. **Confirmed state**: the latest snapshot pushed by the remote store.
2. **Pending state**: local, not-yet-confirmed edits held by the optimistic
   overlay or by the canvas' unsaved buffer.

The client never mutates confirmed state directly; it stages pending state,
issues the remote call and lets the next snapshot supersede the overlay.
"""
