import pytest

from doc_viewer.preview import KeyBindings, PreviewPhase, PreviewSurface, StoredDocumentRef

REF = StoredDocumentRef("http://files/report.pdf", "report.pdf")


@pytest.mark.asyncio
async def test_escape_asks_owner_to_close(engine, fetcher):
    fetcher.payloads[REF.location_uri] = b"%PDF"
    closed: list[bool] = []
    bindings = KeyBindings()
    surface = PreviewSurface(engine, on_close=lambda: closed.append(True), bindings=bindings)

    async with surface.show(REF):
        assert surface.is_open
        assert bindings.bound("Escape") == 1
        await engine.wait_idle()
        bindings.dispatch("Escape")
        assert closed == [True]
        # the surface does not close itself
        assert surface.is_open

    assert surface.is_open is False
    assert bindings.bound("Escape") == 0
    assert bindings.dispatch("Escape") is False
    assert closed == [True]


@pytest.mark.asyncio
async def test_closing_keeps_session_and_reopen_starts_fresh(engine, fetcher):
    fetcher.payloads[REF.location_uri] = b"%PDF"
    surface = PreviewSurface(engine, on_close=lambda: None)

    async with surface.show(REF):
        await engine.wait_idle()
        engine.next_page()
        generation = engine.session.generation

    assert engine.session.phase is PreviewPhase.READY
    assert engine.session.current_page == 2

    async with surface.show(REF):
        assert engine.session.generation > generation
        assert engine.session.phase is PreviewPhase.LOADING
        await engine.wait_idle()
        assert engine.session.current_page == 1


@pytest.mark.asyncio
async def test_binding_released_on_error(engine):
    bindings = KeyBindings()
    surface = PreviewSurface(engine, on_close=lambda: None, bindings=bindings)

    with pytest.raises(RuntimeError):
        async with surface.show(None):
            raise RuntimeError("boom")

    assert bindings.bound("Escape") == 0
    assert surface.is_open is False


def test_escape_ignored_when_closed(engine):
    closed: list[bool] = []
    surface = PreviewSurface(engine, on_close=lambda: closed.append(True))
    surface.handle_key("Escape")
    assert closed == []
