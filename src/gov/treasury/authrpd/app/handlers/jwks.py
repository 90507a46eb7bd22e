from aiohttp import web

from gov.treasury.authrpd.app.config import KeySetBuilderAppKey


async def handle_jwks(request: web.Request):
    """
    Publish the JSON Web Key Set used to verify access tokens.

    The document holds the public keys of the current signing period and the
    periods still inside the rotation window. Verifiers select a key by the
    ``kid`` header of the token. The response may be cached for as long as the
    server caches the document itself.
    """
    key_set_builder = request.app[KeySetBuilderAppKey]
    key_set = await key_set_builder.build_key_set()
    return web.json_response(
        key_set,
        headers={"Cache-Control": f"public, max-age={key_set_builder.cache_ttl}"},
    )
