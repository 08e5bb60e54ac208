"""
User Model: identities seen through Google sign-in
"""
from datetime import datetime, timezone


def create_user_model(db):
    """Factory function to create User model with the given db instance.

    This pattern allows the model to be created before the db is bound
    to an app in app.py, avoiding circular imports.
    """

    class User(db.Model):
        __tablename__ = 'user'

        id = db.Column(db.Integer, primary_key=True, autoincrement=True)

        # Google OAuth fields; uid is the provider subject and the pass author key
        uid = db.Column(db.String(255), unique=True, nullable=False)
        email = db.Column(db.String(255), nullable=True)
        display_name = db.Column(db.String(255), nullable=True)
        photo_url = db.Column(db.String(512), nullable=True)

        # Timestamps
        created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                              default=lambda: datetime.now(timezone.utc))
        last_login = db.Column(db.DateTime(timezone=True), nullable=True)

        def __repr__(self):
            return f'<User {self.email or self.uid}>'

        def update_last_login(self):
            """Update the last login timestamp"""
            self.last_login = datetime.now(timezone.utc)

        def to_identity(self) -> dict:
            """The identity shape the client expects from the auth provider"""
            return {
                'id': self.uid,
                'display_name': self.display_name,
                'email': self.email,
                'photo_url': self.photo_url,
            }

    return User
