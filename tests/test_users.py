import smtplib
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from inventory_audit import auth, config, models, schemas, users
from inventory_audit.errors import Forbidden, InvalidArgument, NotFound, Unauthorized
from inventory_audit.mailer import LoggingEmailSender, SmtpEmailSender


class RecordingSender:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def send_password_reset_email(self, to_email, token, reset_url):
        self.sent.append((to_email, token, reset_url))
        if self.error:
            raise self.error


def register(db, username="alice", email="alice@example.com", password="secret123", role=None):
    return users.register(
        db, schemas.RegisterRequest(username=username, email=email, password=password, role=role)
    )


def tokens_of(db, user_id):
    return db.query(models.PasswordResetToken).filter(models.PasswordResetToken.user_id == user_id).all()


class TestRegister:
    def test_defaults_to_user_role(self, db):
        user = register(db)
        assert user.id is not None
        assert user.role == "USER"
        assert user.enabled
        assert user.password_hash != "secret123"

    @pytest.mark.parametrize("role", ["manager", " MANAGER ", "User"])
    def test_accepts_registrable_roles(self, db, role):
        assert register(db, role=role).role == role.strip().upper()

    def test_admin_role_is_refused(self, db):
        with pytest.raises(InvalidArgument, match="ADMIN"):
            register(db, role="admin")

    def test_unknown_role_is_refused(self, db):
        with pytest.raises(InvalidArgument):
            register(db, role="AUDITOR")

    @pytest.mark.parametrize("password", ["short1", "onlyletters", "12345678"])
    def test_weak_password_is_refused(self, db, password):
        with pytest.raises(InvalidArgument):
            register(db, password=password)

    def test_duplicate_username_and_email(self, db):
        register(db)
        with pytest.raises(InvalidArgument, match="Username"):
            register(db, email="other@example.com")
        with pytest.raises(InvalidArgument, match="Email"):
            register(db, username="other")


class TestLogin:
    def test_issues_token_for_valid_credentials(self, db):
        register(db, role="MANAGER")
        response = users.login(db, schemas.LoginRequest(username="alice", password="secret123"))

        assert response.username == "alice"
        assert response.roles == ["MANAGER"]
        assert response.token_type == "bearer"
        claims = auth.decode_access_token(response.token)
        assert (claims.username, claims.role) == ("alice", "MANAGER")

    @pytest.mark.parametrize("username, password", [("alice", "wrong1234"), ("nobody", "secret123")])
    def test_bad_credentials(self, db, username, password):
        register(db)
        with pytest.raises(InvalidArgument, match="Invalid username or password"):
            users.login(db, schemas.LoginRequest(username=username, password=password))

    def test_disabled_account(self, db):
        user = register(db)
        user.enabled = False
        db.commit()
        with pytest.raises(InvalidArgument):
            users.login(db, schemas.LoginRequest(username="alice", password="secret123"))


class TestTokens:
    def test_garbage_token(self):
        with pytest.raises(Unauthorized):
            auth.decode_access_token("not-a-jwt")

    def test_expired_token(self):
        token = auth.create_access_token({"sub": "alice"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(Unauthorized):
            auth.decode_access_token(token)

    def test_token_without_subject(self):
        with pytest.raises(Unauthorized):
            auth.decode_access_token(auth.create_access_token({"role": "USER"}))


class TestPasswordReset:
    def test_forgot_and_reset(self, db):
        user = register(db)
        sender = RecordingSender()

        users.forgot_password(db, schemas.ForgotPasswordRequest(email="alice@example.com"), sender)

        ((to_email, token, reset_url),) = sender.sent
        assert to_email == "alice@example.com"
        assert reset_url == f"{config.FRONTEND_URL}/reset-password?token={token}"

        users.reset_password(db, schemas.ResetPasswordRequest(token=token, new_password="newpass99"))
        assert auth.authenticate_user(db, "alice", "newpass99") is not None
        assert auth.authenticate_user(db, "alice", "secret123") is None
        assert all(t.used for t in tokens_of(db, user.id))

        with pytest.raises(InvalidArgument, match="Invalid or expired"):
            users.reset_password(db, schemas.ResetPasswordRequest(token=token, new_password="another99"))

    def test_unknown_email_is_silent(self, db):
        sender = RecordingSender()
        users.forgot_password(db, schemas.ForgotPasswordRequest(email="ghost@example.com"), sender)
        assert sender.sent == []

    def test_new_request_invalidates_previous_token(self, db):
        register(db)
        sender = RecordingSender()
        request = schemas.ForgotPasswordRequest(email="alice@example.com")
        users.forgot_password(db, request, sender)
        users.forgot_password(db, request, sender)
        first, second = (token for _, token, _ in sender.sent)

        with pytest.raises(InvalidArgument):
            users.reset_password(db, schemas.ResetPasswordRequest(token=first, new_password="newpass99"))
        users.reset_password(db, schemas.ResetPasswordRequest(token=second, new_password="newpass99"))

    def test_expired_token_is_refused(self, db):
        user = register(db)
        sender = RecordingSender()
        users.forgot_password(db, schemas.ForgotPasswordRequest(email="alice@example.com"), sender)
        (stored,) = tokens_of(db, user.id)
        stored.expires_at = models.utcnow() - timedelta(minutes=1)
        db.commit()

        with pytest.raises(InvalidArgument):
            users.reset_password(db, schemas.ResetPasswordRequest(token=stored.token, new_password="newpass99"))

    def test_weak_new_password_keeps_token(self, db):
        register(db)
        sender = RecordingSender()
        users.forgot_password(db, schemas.ForgotPasswordRequest(email="alice@example.com"), sender)
        token = sender.sent[0][1]

        with pytest.raises(InvalidArgument):
            users.reset_password(db, schemas.ResetPasswordRequest(token=token, new_password="weak"))
        users.reset_password(db, schemas.ResetPasswordRequest(token=token, new_password="strong123"))

    def test_delivery_failure_keeps_token(self, db):
        user = register(db)
        sender = RecordingSender(error=smtplib.SMTPException("relay down"))
        users.forgot_password(db, schemas.ForgotPasswordRequest(email="alice@example.com"), sender)
        (stored,) = tokens_of(db, user.id)
        assert stored.is_valid()

    def test_cleanup_expired_tokens(self, db):
        user = register(db)
        now = models.utcnow()
        db.add_all([
            models.PasswordResetToken(user_id=user.id, token="old", expires_at=now - timedelta(hours=2)),
            models.PasswordResetToken(user_id=user.id, token="fresh", expires_at=now + timedelta(hours=1)),
        ])
        db.commit()

        assert users.cleanup_expired_tokens(db) == 1
        assert [t.token for t in tokens_of(db, user.id)] == ["fresh"]


class TestAdminReset:
    def make_admin(self, db):
        admin = register(db, username="root", email="root@example.com")
        admin.role = auth.ROLE_ADMIN
        db.commit()
        return admin

    def test_admin_sets_password(self, db):
        self.make_admin(db)
        register(db)
        users.admin_reset_password(
            db, schemas.AdminResetPasswordRequest(username="alice", new_password="chosen123"), "root"
        )
        assert auth.authenticate_user(db, "alice", "chosen123") is not None

    def test_non_admin_is_forbidden(self, db):
        register(db)
        register(db, username="bob", email="bob@example.com")
        with pytest.raises(Forbidden):
            users.admin_reset_password(
                db, schemas.AdminResetPasswordRequest(username="bob", new_password="chosen123"), "alice"
            )

    def test_unknown_target(self, db):
        self.make_admin(db)
        with pytest.raises(NotFound):
            users.admin_reset_password(
                db, schemas.AdminResetPasswordRequest(username="ghost", new_password="chosen123"), "root"
            )


class TestDefaultAdmin:
    @pytest.fixture(autouse=True)
    def admin_settings(self, monkeypatch):
        monkeypatch.setattr(config, "ADMIN_ENABLED", True)
        monkeypatch.setattr(config, "ADMIN_USERNAME", "admin")
        monkeypatch.setattr(config, "ADMIN_EMAIL", "admin@example.com")
        monkeypatch.setattr(config, "ADMIN_PASSWORD", "admin123")

    def test_created_once(self, db):
        admin = users.ensure_default_admin(db)
        assert admin.role == "ADMIN"
        assert auth.authenticate_user(db, "admin", "admin123") is not None
        assert users.ensure_default_admin(db) is None
        assert db.query(models.User).count() == 1

    def test_disabled(self, db, monkeypatch):
        monkeypatch.setattr(config, "ADMIN_ENABLED", False)
        assert users.ensure_default_admin(db) is None
        assert db.query(models.User).count() == 0


class TestMailer:
    def test_logging_sender_does_not_raise(self):
        LoggingEmailSender().send_password_reset_email("a@example.com", "tok", "http://x/reset?token=tok")

    def test_smtp_sender(self):
        sender = SmtpEmailSender(
            host="mail.example.com", port=587, username="bot", password="pw", sender="noreply@example.com"
        )
        with patch("smtplib.SMTP") as smtp_class:
            smtp = MagicMock()
            smtp_class.return_value.__enter__.return_value = smtp
            sender.send_password_reset_email("a@example.com", "tok", "http://x/reset?token=tok")

        smtp_class.assert_called_once_with("mail.example.com", 587, timeout=10)
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("bot", "pw")
        message = smtp.send_message.call_args.args[0]
        assert message["To"] == "a@example.com"
        assert "http://x/reset?token=tok" in message.get_content()
