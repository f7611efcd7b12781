"""
Unit tests for menu text rendering and user-facing error messages.
"""

import httpx
from sqlalchemy.exc import OperationalError

from src.storebot.exceptions import PaymentProviderError
from src.storebot.services.menus import DEFAULT_MENU_TEXT, render_menu_text
from src.storebot.services.whatsapp import get_user_friendly_error_message


class TestRenderMenuText:
    """Tests for render_menu_text."""

    def test_placeholders_are_case_insensitive(self):
        text = render_menu_text(
            "Oi {{Nome_Cliente}} ({{NUMERO_CLIENTE}}) categoria {{id_categoria}}",
            customer_name="Maria",
            customer_number="5511988887777",
            category_id=4,
        )

        assert text == "Oi Maria (5511988887777) categoria 4"

    def test_missing_name_falls_back_to_cliente(self):
        assert render_menu_text("Oi {{nome_cliente}}", customer_name="  ") == "Oi Cliente"

    def test_blank_template_uses_default(self):
        assert render_menu_text("   ", customer_name="Ana") == DEFAULT_MENU_TEXT.replace("{{nome_cliente}}", "Ana")

    def test_backslashes_in_name_are_literal(self):
        assert render_menu_text("Oi {{nome_cliente}}", customer_name=r"A\1B") == r"Oi A\1B"

    def test_missing_category_renders_empty(self):
        assert render_menu_text("[{{id_categoria}}]") == "[]"


class TestUserFriendlyErrorMessages:
    """Tests for get_user_friendly_error_message."""

    def test_timeout(self):
        message = get_user_friendly_error_message(httpx.ReadTimeout("timed out"))

        assert "temporariamente indisponível" in message

    def test_connection_error(self):
        assert "conexão" in get_user_friendly_error_message(httpx.ConnectError("refused"))

    def test_circuit_breaker(self):
        error = PaymentProviderError("mercadopago_pix", "circuit breaker open")

        assert "pagamento" in get_user_friendly_error_message(error)

    def test_payment_provider(self):
        error = PaymentProviderError("mercadopago_pix", "HTTP 500")

        assert get_user_friendly_error_message(error).startswith("Não foi possível gerar o pagamento")

    def test_database_error(self):
        error = OperationalError("SELECT 1", {}, Exception("database is locked"))

        assert get_user_friendly_error_message(error).startswith("Sistema temporariamente indisponível")

    def test_unknown_error_hides_details(self):
        message = get_user_friendly_error_message(RuntimeError("secret stack detail"))

        assert "secret" not in message
