"""
Room Model: the places a pass can go from or to
"""


def create_room_model(db):
    """Factory function to create the Room model with the given db instance."""

    class Room(db.Model):
        __tablename__ = 'rooms'

        id = db.Column(db.Integer, primary_key=True, autoincrement=True)
        name = db.Column(db.String(255), nullable=False)  # not unique; readers dedupe

        def __repr__(self):
            return f'<Room {self.name}>'

    return Room
