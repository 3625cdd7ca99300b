from .store import InMemoryCollaboratorRepository, JsonFileCollaboratorRepository

__all__ = ["JsonFileCollaboratorRepository", "InMemoryCollaboratorRepository"]
