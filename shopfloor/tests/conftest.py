# shopfloor/tests/conftest.py

from __future__ import annotations

import uuid
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple, Union

import pytest
from django.contrib.auth import authenticate, get_user_model
from rest_framework.test import APIClient

from shopfloor.models import Job, JobPlanning, JobStep, Machine, OperatorProfile, UserMachine
from shopfloor.workflows.rules import STEP_NAMES


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class AuthAPIClient(APIClient):
    """
    Test client that uses force_authenticate for predictable DRF auth.
    """

    _user = None

    def login(self, username: str, password: str, **kwargs) -> bool:  # type: ignore[override]
        user = authenticate(username=username, password=password)
        if not user:
            return False
        self.force_authenticate(user=user)
        self._user = user
        return True

    def logout(self) -> None:  # type: ignore[override]
        # DRF's force_authenticate(user=None) calls self.logout() internally.
        super().logout()
        self.handler._force_user = None
        self.handler._force_token = None
        self._user = None


@pytest.fixture
def api_client() -> AuthAPIClient:
    return AuthAPIClient()


# ===============================================================
# Machines and users
# ===============================================================

@pytest.fixture
def make_machine(db) -> Callable[..., Machine]:
    def _make(machine_id: Optional[str] = None, machine_type: str = "Printing", **extra) -> Machine:
        kwargs = {
            "machine_code": _rand("MC"),
            "machine_type": machine_type,
            **extra,
        }
        if machine_id is not None:
            kwargs["id"] = machine_id
        return Machine.objects.create(**kwargs)

    return _make


@pytest.fixture
def make_user(db) -> Callable[..., Any]:
    """
    make_user("printer1", role="printer", machines=[m1, m2])

    `role` is stored verbatim, so JSON lists and odd spellings can be
    exercised. Password is always "pass123".
    """
    User = get_user_model()

    def _make(
        username: Optional[str] = None,
        *,
        role: Union[str, None] = None,
        machines: Iterable[Machine] = (),
        is_superuser: bool = False,
    ):
        user = User.objects.create(
            username=username or _rand("user"),
            is_superuser=is_superuser,
            is_staff=is_superuser,
        )
        user.set_password("pass123")
        user.save(update_fields=["password"])

        if role is not None:
            OperatorProfile.objects.create(user=user, role=role)

        for machine in machines:
            UserMachine.objects.create(user=user, machine=machine, is_active=True)
        return user

    return _make


# ===============================================================
# Jobs and plannings
# ===============================================================

StepSpec = Union[str, Tuple[str, str], Tuple[str, str, Sequence[Any]]]


@pytest.fixture
def make_planning(db) -> Callable[..., JobPlanning]:
    """
    make_planning("JOB-1", [("PaperStore", "stop"), ("PrintingDetails", "planned", [m1])])

    Steps are numbered 1..n in the order given. A machine entry can be a
    Machine instance (stored with its id, code and type) or a raw record.
    """

    def _machine_record(entry):
        if isinstance(entry, Machine):
            return {"machineId": entry.id, "machineCode": entry.machine_code, "machineType": entry.machine_type}
        return entry

    def _make(
        nrc_job_no: Optional[str] = None,
        steps: Optional[Sequence[StepSpec]] = None,
        *,
        demand: str = "normal",
        with_job: bool = True,
        job_demand: Optional[str] = None,
    ) -> JobPlanning:
        nrc_job_no = nrc_job_no or _rand("JOB")

        if with_job:
            Job.objects.get_or_create(
                nrc_job_no=nrc_job_no,
                defaults={"job_demand": job_demand or demand},
            )

        planning = JobPlanning.objects.create(nrc_job_no=nrc_job_no, job_demand=demand)

        if steps is None:
            steps = list(STEP_NAMES)

        for no, entry in enumerate(steps, start=1):
            if isinstance(entry, str):
                name, status, machines = entry, "planned", ()
            elif len(entry) == 2:
                name, status = entry
                machines = ()
            else:
                name, status, machines = entry
            JobStep.objects.create(
                planning=planning,
                step_no=no,
                step_name=name,
                status=status,
                machine_details=[_machine_record(m) for m in machines],
            )
        return planning

    return _make
