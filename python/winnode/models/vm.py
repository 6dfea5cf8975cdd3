# winnode/models/vm.py

from pydantic import BaseModel, field_validator

from winnode.models.k8s import ObjectRef


class WindowsVM(BaseModel):
    """
    A provisioned Windows instance that is about to be configured.

    Attributes:
        machine: The Machine object the instance was discovered through.
        instance_id: Cloud instance id, the last segment of the provider id.
        address: The instance's internal IP address.
    """

    machine: ObjectRef
    instance_id: str
    address: str

    class Config:
        frozen = True

    @field_validator("instance_id", "address")
    @classmethod
    def validate_non_empty(cls, val: str) -> str:
        if not val.strip():
            raise ValueError("must be a non-empty string")
        return val
