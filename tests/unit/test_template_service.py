import pytest
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import select

from imprint.core.exceptions import ConflictError, NotFoundError, ValidationError
from imprint.modules.templates.models import Template
from imprint.modules.templates.repositories import TemplateRepository, current_defaults_for_update
from imprint.modules.templates.schemas import TemplateCreate, TemplateUpdate
from imprint.modules.templates.services import DEFAULT_TEMPLATES, TemplateService
from imprint.modules.uploads.models import Upload


@pytest.fixture
def service(session):
    return TemplateService(TemplateRepository(session))


def _payload(name, **overrides):
    data = {"name": name, "width": 800, "height": 600}
    data.update(overrides)
    return TemplateCreate(**data)


async def _default_ids(session):
    result = await session.execute(
        select(Template.id).where(Template.is_default == True)  # noqa: E712
    )
    return set(result.scalars().all())


@pytest.mark.asyncio
async def test_create_and_get(service):
    created = await service.create_template(_payload("Banner", quality=90))

    fetched = await service.get_template(created.id)
    assert fetched.name == "Banner"
    assert fetched.quality == 90
    assert fetched.fit == "cover"


@pytest.mark.asyncio
async def test_duplicate_name_conflicts(service):
    await service.create_template(_payload("Banner"))

    with pytest.raises(ConflictError):
        await service.create_template(_payload("Banner"))


@pytest.mark.asyncio
async def test_missing_template_raises_not_found(service):
    with pytest.raises(NotFoundError):
        await service.get_template("nope")


@pytest.mark.asyncio
async def test_at_most_one_default(service, session):
    first = await service.create_template(_payload("First", is_default=True))
    second = await service.create_template(_payload("Second", is_default=True))

    assert await _default_ids(session) == {second.id}

    await service.set_default_template(first.id)
    assert await _default_ids(session) == {first.id}

    default = await service.get_default_template()
    assert default.id == first.id


def test_default_switch_locks_rows_on_server_databases():
    statement = current_defaults_for_update()

    assert "FOR UPDATE" in str(statement.compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" not in str(statement.compile(dialect=sqlite.dialect()))


@pytest.mark.asyncio
async def test_setting_default_activates_template(service):
    template = await service.create_template(_payload("Dormant", is_active=False))

    updated = await service.set_default_template(template.id)

    assert updated.is_default is True
    assert updated.is_active is True


@pytest.mark.asyncio
async def test_inactive_default_is_not_returned(service):
    template = await service.create_template(_payload("Only", is_default=True))
    await service.toggle_template_status(template.id)

    with pytest.raises(NotFoundError):
        await service.get_default_template()


@pytest.mark.asyncio
async def test_update_merges_and_revalidates(service):
    template = await service.create_template(_payload("Banner"))

    updated = await service.update_template(template.id, TemplateUpdate(quality=55, format="jpg"))
    assert updated.quality == 55
    assert updated.format == "jpeg"
    assert updated.width == 800

    with pytest.raises(ValidationError) as exc_info:
        await service.update_template(template.id, TemplateUpdate(crop_x=10))
    assert exc_info.value.code == 400
    assert exc_info.value.details["errors"]


@pytest.mark.asyncio
async def test_update_to_taken_name_conflicts(service):
    await service.create_template(_payload("Taken"))
    other = await service.create_template(_payload("Other"))

    with pytest.raises(ConflictError):
        await service.update_template(other.id, TemplateUpdate(name="Taken"))


@pytest.mark.asyncio
async def test_delete_refused_while_uploads_reference_it(service, session):
    template = await service.create_template(_payload("Used"))
    session.add(Upload(original_filename="a.jpg", mime_type="image/jpeg", template_id=template.id))
    await session.commit()

    with pytest.raises(ConflictError) as exc_info:
        await service.delete_template(template.id)
    assert "1 associated uploads" in exc_info.value.message


@pytest.mark.asyncio
async def test_delete_unused_template(service):
    template = await service.create_template(_payload("Unused"))
    template_id = template.id

    await service.delete_template(template_id)

    with pytest.raises(NotFoundError):
        await service.get_template(template_id)


@pytest.mark.asyncio
async def test_duplicate_copies_parameters(service):
    source = await service.create_template(
        _payload("Source", is_default=True, box_enabled=True, box_padding=30)
    )

    copy = await service.duplicate_template(source.id, "Source Copy")

    assert copy.id != source.id
    assert copy.name == "Source Copy"
    assert copy.width == 800
    assert copy.box_padding == 30
    assert copy.is_default is False
    assert copy.is_active is True


@pytest.mark.asyncio
async def test_list_search_and_pagination(service):
    await service.create_template(_payload("Alpha Banner"))
    await service.create_template(_payload("Beta", description="a wide banner"))
    await service.create_template(_payload("Gamma"))

    found = await service.list_templates(search="banner")
    assert {t.name for t in found.templates} == {"Alpha Banner", "Beta"}

    page = await service.list_templates(page=2, limit=2, sort_by="name", sort_order="asc")
    assert [t.name for t in page.templates] == ["Gamma"]
    assert page.pagination.total == 3
    assert page.pagination.total_pages == 2
    assert page.pagination.has_prev_page is True
    assert page.pagination.has_next_page is False


@pytest.mark.asyncio
async def test_default_presets_skip_existing(service):
    created = await service.create_default_templates()
    assert len(created) == len(DEFAULT_TEMPLATES)

    again = await service.create_default_templates()
    assert again == []

    default = await service.get_default_template()
    assert default.name == "Social Media Square"


@pytest.mark.asyncio
async def test_stats(service, session):
    template = await service.create_template(_payload("Counted"))
    for i in range(7):
        session.add(Upload(original_filename=f"{i}.jpg", mime_type="image/jpeg", template_id=template.id))
    await session.commit()

    stats = await service.get_template_stats(template.id)

    assert stats.total_uploads == 7
    assert len(stats.recent_uploads) == 5
    assert stats.template.name == "Counted"


@pytest.mark.asyncio
async def test_get_by_name(service):
    created = await service.create_template(_payload("Named"))

    found = await service.get_template_by_name("Named")
    assert found.id == created.id

    with pytest.raises(NotFoundError):
        await service.get_template_by_name("Unnamed")
