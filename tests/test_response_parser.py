from decimal import Decimal
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from app.afip_client.exceptions import AfipResponseError
from app.afip_client.response_parser import (
    describe_code,
    mask_credentials,
    parse_cae_response,
    parse_dummy_response,
    parse_last_authorized_response,
    parse_query_response,
    parse_sales_points_response,
)
from _afip_fixtures import (
    WSFE,
    cae_response,
    dummy_response,
    fault_response,
    last_authorized_response,
    query_response,
    soap11,
)


def test_approved_response():
    response = parse_cae_response(cae_response(events=[(1, "Aviso de mantenimiento")]))
    assert response.result == "A"
    assert response.approved is True
    assert response.cae == "12345678901234"
    assert response.cae_expiration == "20261028"
    assert response.invoice_number == 101
    assert response.invoice_type == 6
    assert response.sale_point == 1
    assert response.events[0].code == 1
    assert response.errors == []


def test_rejected_with_observations_keeps_lists_separate():
    content = cae_response(
        result="R",
        cae="",
        observations=[(10016, "El numero no es correlativo")],
        errors=[(99999, "Código desconocido")],
    )
    response = parse_cae_response(content)
    assert response.result == "R"
    assert response.approved is False
    assert [o.code for o in response.observations] == [10016]
    # código desconocido se conserva tal cual
    assert response.errors[0].code == 99999
    assert response.errors[0].message == "Código desconocido"


def test_partial_without_cae_is_not_approved():
    response = parse_cae_response(cae_response(result="P", cae=""))
    assert response.result == "P"
    assert response.approved is False


def test_errors_only_response_is_rejection():
    response = parse_cae_response(cae_response(with_detail=False, result="", errors=[(600, "Token vencido")]))
    assert response.result == "R"
    assert response.errors[0].code == 600


def test_prefixed_elements_are_parsed():
    content = (
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"><s:Body>'
        f'<f:FEDummyResponse xmlns:f="{WSFE}"><f:FEDummyResult>'
        "<f:AppServer>OK</f:AppServer><f:DbServer>OK</f:DbServer><f:AuthServer>ERROR</f:AuthServer>"
        "</f:FEDummyResult></f:FEDummyResponse></s:Body></s:Envelope>"
    ).encode()
    status = parse_dummy_response(content)
    assert status.app_server == "OK"
    assert status.auth_server == "ERROR"
    assert status.ok is False
    assert parse_dummy_response(dummy_response()).ok is True


def test_last_authorized_number():
    assert parse_last_authorized_response(last_authorized_response(100)) == 100
    with pytest.raises(AfipResponseError, match="600"):
        parse_last_authorized_response(last_authorized_response(0, errors=[(600, "Token vencido")]))


def test_query_found_and_not_found():
    record = parse_query_response(query_response())
    assert record.cae == "12345678901234"
    assert record.invoice_number == 101
    assert record.total_amount == Decimal("1210.00")
    assert record.cae_expiration == "20261028"

    assert parse_query_response(query_response(errors=[(602, "Sin Resultados")])) is None


def test_sales_points():
    content = soap11(
        f'<FEParamGetPtosVentaResponse xmlns="{WSFE}"><FEParamGetPtosVentaResult><ResultGet>'
        "<PtoVenta><Nro>1</Nro><EmisionTipo>CAE - Ws</EmisionTipo><Bloqueado>N</Bloqueado><FchBaja>NULL</FchBaja></PtoVenta>"
        "<PtoVenta><Nro>2</Nro><EmisionTipo>CAE - Ws</EmisionTipo><Bloqueado>S</Bloqueado><FchBaja>20250101</FchBaja></PtoVenta>"
        "</ResultGet></FEParamGetPtosVentaResult></FEParamGetPtosVentaResponse>"
    )
    points = parse_sales_points_response(content)
    assert [p.number for p in points] == [1, 2]
    assert points[0].blocked is False and points[0].drop_date is None
    assert points[1].blocked is True and points[1].drop_date == "20250101"


def test_fault_and_malformed_xml_raise():
    with pytest.raises(AfipResponseError, match="Server was unable"):
        parse_cae_response(fault_response("Server was unable to process request", "soap:Server"))
    with pytest.raises(AfipResponseError):
        parse_cae_response(b"<html>502 Bad Gateway")
    with pytest.raises(AfipResponseError):
        parse_cae_response(b"")


def test_describe_code_and_masking():
    assert "correlativo" in describe_code(10016)
    assert describe_code(12345) == "12345"
    masked = mask_credentials("<Auth><Token>abc</Token><Sign>def</Sign><Cuit>1</Cuit></Auth>")
    assert "abc" not in masked and "def" not in masked
    assert "<Token>***</Token>" in masked
