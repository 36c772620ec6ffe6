import unittest
from datetime import timedelta

from library_fixtures import STAMP, LibraryTestCase, scanned_song

from media_indexer.models import VARIOUS_ARTISTS


class TestLibraryMerger(LibraryTestCase):
    def test_merge_builds_graph(self) -> None:
        added = self.merge(
            "/Band/Record",
            scanned_song("/Band/Record/01.mp3", "Band", "Record", "One", "1", year="1999", genre="Rock"),
            scanned_song("/Band/Record/02.mp3", "Band", "Record", "Two", "2"),
        )
        self.assertEqual(len(added), 2)
        artists = self.repository.artists(self.library.id)
        self.assertEqual([artist.name for artist in artists], ["Band"])
        albums = self.repository.albums(self.library.id)
        self.assertEqual(len(albums), 1)
        album = albums[0]
        self.assertEqual((album.name, album.artist_name, album.year, album.genre), ("Record", "Band", 1999, "Rock"))
        artist_albums = self.repository.artist_albums(artists[0].id)
        self.assertEqual(len(artist_albums), 1)
        self.assertEqual(artist_albums[0].album_id, album.id)
        songs = self.repository.artist_album_songs(artist_albums[0].id)
        self.assertEqual([(song.track, song.title) for song in songs], [(1, "One"), (2, "Two")])
        self.assertTrue(all(song.source_id == self.source.id for song in songs))

    def test_artist_lookup_is_case_insensitive(self) -> None:
        self.merge("/Band/Record", scanned_song("/Band/Record/01.mp3", "Band", "Record"))
        self.merge("/Band/Other", scanned_song("/Band/Other/05.mp3", "BAND", "record", track="5"))
        self.assertEqual(len(self.repository.artists(self.library.id)), 1)
        self.assertEqual(len(self.repository.albums(self.library.id)), 1)

    def test_mixed_artist_album_is_various_artists(self) -> None:
        self.merge(
            "/Hits",
            scanned_song("/Hits/01.mp3", "One", "Hits"),
            scanned_song("/Hits/02.mp3", "Two", "Hits", track="2"),
        )
        album = self.repository.albums(self.library.id)[0]
        self.assertEqual(album.artist_name, VARIOUS_ARTISTS)
        self.assertEqual(len(self.repository.artists(self.library.id)), 2)
        self.assertEqual(len(self.repository.album_references(album.id)), 2)

    def test_greatest_hits_flip_never_reverts(self) -> None:
        self.merge("/GH", scanned_song("/GH/01.mp3", "A", "Greatest Hits"))
        album = self.repository.albums(self.library.id)[0]
        self.assertEqual(album.artist_name, "A")

        self.merge("/GH", scanned_song("/GH/02.mp3", "B", "Greatest Hits", track="2"))
        albums = self.repository.albums(self.library.id)
        self.assertEqual(len(albums), 1)
        self.assertEqual(albums[0].id, album.id)
        self.assertEqual(albums[0].artist_name, VARIOUS_ARTISTS)

        self.merge("/GH", scanned_song("/GH/03.mp3", "A", "Greatest Hits", track="3"))
        self.assertEqual(self.store.get_album(album.id).artist_name, VARIOUS_ARTISTS)

    def test_same_name_in_other_folder_by_other_artist_is_separate(self) -> None:
        self.merge("/A/Best Of", scanned_song("/A/Best Of/01.mp3", "A", "Best Of"))
        self.merge("/B/Best Of", scanned_song("/B/Best Of/01.mp3", "B", "Best Of"))
        albums = self.repository.albums(self.library.id)
        self.assertEqual(len(albums), 2)
        self.assertEqual(sorted(album.artist_name for album in albums), ["A", "B"])

    def test_compilation_sharing_an_artist_gets_its_own_artist_album(self) -> None:
        self.merge("/best", scanned_song("/best/x1.mp3", "X", "Greatest Hits"))
        added = self.merge(
            "/comp",
            scanned_song("/comp/x2.mp3", "X", "Greatest Hits"),
            scanned_song("/comp/y1.mp3", "Y", "Greatest Hits", track="2"),
        )

        albums = self.repository.albums(self.library.id)
        self.assertEqual(len(albums), 2)
        for song in self.store.get_source_songs(self.source.id):
            artist_album = self.store.get_artist_album(song.artist_album_id)
            self.assertEqual(artist_album.album_id, song.album_id, song.path)
        compilation = added[0].album_id
        self.assertEqual(
            sorted(aa.artist_id for aa in self.repository.album_references(compilation)),
            sorted(artist.id for artist in self.repository.artists(self.library.id)),
        )

    def test_year_and_genre_are_only_filled_once(self) -> None:
        self.merge("/R", scanned_song("/R/01.mp3", "Band", "Record"))
        album = self.repository.albums(self.library.id)[0]
        self.assertEqual((album.year, album.genre), (0, ""))

        self.merge("/R", scanned_song("/R/02.mp3", "Band", "Record", track="2", year="1999", genre="Rock"))
        self.merge("/R", scanned_song("/R/03.mp3", "Band", "Record", track="3", year="2005", genre="Pop"))
        stored = self.store.get_album(album.id)
        self.assertEqual((stored.year, stored.genre), (1999, "Rock"))

    def test_apply_update(self) -> None:
        added = self.merge("/R", scanned_song("/R/01.mp3", "Band", "Record", "Old"))
        song = added[0]
        later = STAMP + timedelta(days=2)
        update = scanned_song("/R/01.mp3", "Band", "Record", "New", "7", year="2010", genre="Jazz")
        update.modified_time = later
        self.merger.apply_update(song, update)

        stored = self.store.get_source_songs(self.source.id)[0]
        self.assertEqual((stored.id, stored.title, stored.track, stored.modified_time), (song.id, "New", 7, later))
        album = self.store.get_album(song.album_id)
        self.assertEqual((album.year, album.genre), (2010, "Jazz"))


if __name__ == "__main__":
    unittest.main()
