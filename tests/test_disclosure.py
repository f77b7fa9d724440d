from localfix.core.auth import Role
from localfix.services.disclosure import (
    Viewer,
    disclose_application,
    disclose_booking,
    disclose_job,
    disclose_review,
    public_profile,
)
from localfix.services.lifecycle import Relation

CLIENT = {
    "id": "client-1",
    "role": "client",
    "full_name": "Cara Client",
    "avatar_url": None,
    "email": "cara@example.com",
    "phone": "+15550001",
}
SERVICE = {"id": "svc-1", "provider_id": "worker-1", "name": "Leak repair", "price": 80, "status": "open"}
PROVIDER = Viewer(user_id="worker-1", role=Role.WORKER)


def _booking(status: str) -> dict:
    return {
        "id": "b-1",
        "service_id": "svc-1",
        "client_id": "client-1",
        "booking_date": "2024-06-01",
        "status": status,
        "notes": "Back door",
    }


def test_pending_booking_hides_client_from_provider() -> None:
    view = disclose_booking(
        _booking("pending"),
        viewer=PROVIDER,
        relations={Relation.SERVICE_PROVIDER},
        client_profile=CLIENT,
        service=SERVICE,
    )

    assert view["client"] is None
    assert view["client_hidden"] is True
    assert "client_id" not in view
    assert "notes" not in view
    assert view["service"]["name"] == "Leak repair"


def test_approved_booking_shows_client_contact() -> None:
    for status in ("approved", "completed", "cancelled"):
        view = disclose_booking(
            _booking(status),
            viewer=PROVIDER,
            relations={Relation.SERVICE_PROVIDER},
            client_profile=CLIENT,
            service=SERVICE,
        )
        assert view["client"]["email"] == "cara@example.com"
        assert view["client_hidden"] is False


def test_booking_client_always_sees_themselves() -> None:
    view = disclose_booking(
        _booking("pending"),
        viewer=Viewer(user_id="client-1", role=Role.CLIENT),
        relations={Relation.CLIENT},
        client_profile=CLIENT,
        service=SERVICE,
    )
    assert view["client"]["phone"] == "+15550001"


def test_job_poster_requires_accepted_and_revealed_application() -> None:
    job = {"id": "job-1", "poster_id": "client-1", "status": "in-progress"}
    accepted = {"id": "app-1", "provider_id": "worker-1", "status": "accepted", "client_contact_revealed": False}

    hidden = disclose_job(job, viewer=PROVIDER, relations=set(), poster_profile=CLIENT, application=accepted)
    assert hidden["poster"] is None
    assert hidden["poster_hidden"] is True

    revealed = {**accepted, "client_contact_revealed": True}
    shown = disclose_job(job, viewer=PROVIDER, relations=set(), poster_profile=CLIENT, application=revealed)
    assert shown["poster"]["phone"] == "+15550001"

    poster_view = disclose_job(
        job,
        viewer=Viewer(user_id="client-1", role=Role.CLIENT),
        relations={Relation.POSTER},
        poster_profile=CLIENT,
    )
    assert poster_view["poster_hidden"] is False


def test_application_contact_only_once_accepted() -> None:
    poster = Viewer(user_id="client-1", role=Role.CLIENT)
    profile = {**CLIENT, "id": "worker-1", "full_name": "Wes Worker"}
    pending = {"id": "app-1", "provider_id": "worker-1", "status": "pending"}

    view = disclose_application(pending, viewer=poster, relations={Relation.POSTER}, provider_profile=profile)
    assert view["provider"] == {"id": "worker-1", "full_name": "Wes Worker", "avatar_url": None}

    accepted = disclose_application(
        {**pending, "status": "accepted"},
        viewer=poster,
        relations={Relation.POSTER},
        provider_profile=profile,
    )
    assert accepted["provider"]["email"] == "cara@example.com"


def test_review_joins_only_public_fields() -> None:
    view = disclose_review({"id": "r-1", "rating": 5}, reviewer=CLIENT, reviewee=None)
    assert view["reviewer"] == public_profile(CLIENT)
    assert "email" not in view["reviewer"]
    assert view["reviewee"] is None
