#! /usr/bin/env python3

'''
tests for the smart factors: measurement set, Jacobian assembly, point
elimination and the linearized outputs
'''
import sys

import numpy as np
import pytest

from smartfactor import (
    CameraValues,
    CheiralityError,
    DegenerateReductionError,
    FailureKind,
    ImplicitSchurFactor,
    JacobianFactorQ,
    JacobianFactorSVD,
    LinearizationMode,
    LinearizationParams,
    RegularHessianFactor,
    SmartCameraFactor,
    SmartPoseFactor,
)
from smartfactor.camera import PinholeCamera
from smartfactor.schur import build_full_f, num_upper_blocks, schur_complement
from smartfactor.types import DiagonalNoise, GaussianNoise, IsotropicNoise, Key, SfmTrack
from smartfactor.types.noise import unit_noise
from smartfactor.types.variables import Calibration, Pose3D
from smartfactor.utils.transformations import get_rotation_matrix_from_yaw

from scene import keys, look_at, numerical_jacobian, numerical_rank, ring_cameras, stereo_cameras


def observe(factor_class, cameras, point, noise=None, pixel_sigma=0.0, seed=0, **kwargs):
    """A factor with one measurement per camera, optionally with perturbed pixels."""
    rng = np.random.default_rng(seed)
    noise = noise or unit_noise()
    factor = factor_class(**kwargs)
    for key, camera in zip(keys(len(cameras)), cameras):
        sensor_camera = camera.with_sensor_offset(factor.body_P_sensor)
        pixel = sensor_camera.project(point) + pixel_sigma * rng.normal(size=2)
        factor.add(pixel, key, noise)
    return factor


def retract_camera(cameras, index, delta):
    moved = list(cameras)
    moved[index] = cameras[index].retract(delta)
    return moved


class TestMeasurementSet:
    @classmethod
    def setup_class(self):
        self.pixels = [[10.0, 20.0], [30.0, 40.0], [50.0, 60.0]]
        self.keys = [Key("X0"), Key("X1"), Key("X0")]
        self.noise = IsotropicNoise(sigma=2.0)

    def test_dimension_constant(self):
        assert SmartPoseFactor.D == 6
        assert SmartCameraFactor.D == 11
        assert SmartCameraFactor().dim == 11

    def test_batch_equals_one_by_one(self):
        one_by_one = SmartPoseFactor()
        for pixel, key in zip(self.pixels, self.keys):
            one_by_one.add(pixel, key, self.noise)
        batch = SmartPoseFactor()
        batch.add_batch(self.pixels, self.keys, self.noise)
        per_measurement = SmartPoseFactor()
        per_measurement.add_batch(self.pixels, self.keys, [self.noise] * 3)

        assert one_by_one.equals(batch)
        assert batch.equals(per_measurement)
        assert len(batch) == 3
        # repeated keys are kept, in insertion order
        assert batch.keys == self.keys

    def test_batch_length_mismatch(self):
        factor = SmartPoseFactor()
        with pytest.raises(ValueError):
            factor.add_batch(self.pixels, self.keys[:2], self.noise)
        with pytest.raises(ValueError):
            factor.add_batch(self.pixels, self.keys, [self.noise] * 2)
        assert len(factor) == 0

    def test_invalid_entry_adds_nothing(self):
        factor = SmartPoseFactor()
        with pytest.raises(ValueError):
            factor.add_batch([[1.0, 2.0], [1.0, 2.0, 3.0]], ["X0", "X1"], self.noise)
        assert len(factor) == 0
        with pytest.raises(ValueError):
            factor.add([1.0, 2.0], Key("X0"), unit_noise(3))

    def test_add_track(self):
        track = SfmTrack(measurements=list(zip(["X0", "X1", "X0"], self.pixels)))
        factor = SmartPoseFactor()
        factor.add_track(track, self.noise)
        reference = SmartPoseFactor()
        reference.add_batch(self.pixels, self.keys, self.noise)
        assert factor.equals(reference)

    def test_measured_is_a_copy(self):
        factor = SmartPoseFactor()
        factor.add_batch(self.pixels, self.keys, self.noise)
        factor.measured[0][0] = 1e6
        np.testing.assert_allclose(factor.measured[0], self.pixels[0])
        assert [m.key for m in factor.measurements] == self.keys

    def test_equals_compares_every_measurement(self):
        a = SmartPoseFactor()
        a.add_batch(self.pixels, self.keys, self.noise)
        b = SmartPoseFactor()
        b.add_batch(self.pixels[:2] + [[50.0, 61.0]], self.keys, self.noise)
        c = SmartPoseFactor()
        c.add_batch(self.pixels, self.keys[:2] + [Key("X2")], self.noise)
        d = SmartPoseFactor()
        d.add_batch(self.pixels, self.keys, [self.noise, self.noise, unit_noise()])
        assert not a.equals(b)
        assert not a.equals(c)
        assert not a.equals(d)
        assert a.equals(b, tol=2.0)

    def test_equals_type_and_offset(self):
        a = SmartPoseFactor()
        a.add_batch(self.pixels, self.keys, self.noise)
        b = SmartCameraFactor()
        b.add_batch(self.pixels, self.keys, self.noise)
        c = SmartPoseFactor(body_P_sensor=Pose3D(translation=[0.0, 0.0, 1.0]))
        c.add_batch(self.pixels, self.keys, self.noise)
        assert not a.equals(b)
        assert not a.equals(c)
        assert c.equals(c)

    def test_print(self, capsys):
        factor = SmartPoseFactor()
        factor.add_batch(self.pixels, self.keys, self.noise)
        factor.print("factor: ", key_formatter=lambda key: f"<{key}>")
        out = capsys.readouterr().out
        assert "factor: SmartPoseFactor" in out
        assert "<X1>" in out
        assert "SmartPoseFactor" in str(factor)


class TestJacobianAssembly:
    @classmethod
    def setup_class(self):
        self.point = np.array([0.2, -0.3, 0.4])
        self.cameras = ring_cameras(4)

    @pytest.mark.parametrize("factor_class", [SmartPoseFactor, SmartCameraFactor])
    @pytest.mark.parametrize("num_cameras", [1, 2, 3, 5])
    def test_sizes(self, factor_class, num_cameras):
        cameras = ring_cameras(num_cameras)
        factor = observe(factor_class, cameras, self.point, pixel_sigma=0.5)
        blocks = factor.compute_jacobians(cameras, self.point)
        assert blocks.size == num_cameras
        assert blocks.keys == keys(num_cameras)
        assert all(Fi.shape == (2, factor_class.D) for _, Fi in blocks.fblocks)
        assert blocks.E.shape == (2 * num_cameras, 3)
        assert blocks.b.shape == (2 * num_cameras,)

        hessian = factor.create_hessian_factor(cameras, self.point, lambda_=1e-3)
        assert len(hessian.Gs) == num_upper_blocks(num_cameras)
        assert len(hessian.gs) == num_cameras
        assert hessian.keys == keys(num_cameras)

    @pytest.mark.parametrize("factor_class", [SmartPoseFactor, SmartCameraFactor])
    def test_hessian_symmetric(self, factor_class):
        factor = observe(factor_class, self.cameras, self.point, pixel_sigma=0.5)
        H = factor.create_hessian_factor(self.cameras, self.point).information()
        np.testing.assert_allclose(H, H.T, atol=1e-9)

    @pytest.mark.parametrize("factor_class", [SmartPoseFactor, SmartCameraFactor])
    def test_numeric_jacobian_of_reprojection_error(self, factor_class):
        factor = observe(factor_class, self.cameras, self.point, pixel_sigma=0.5)
        F = build_full_f(factor.compute_jacobians(self.cameras, self.point).fblocks)
        D = factor_class.D
        for i in range(len(self.cameras)):
            numeric = numerical_jacobian(
                lambda d: factor.reprojection_error(
                    retract_camera(self.cameras, i, d), self.point
                ),
                D,
            )
            np.testing.assert_allclose(F[:, i * D : (i + 1) * D], numeric, atol=1e-5)

    def test_numeric_point_jacobian(self):
        factor = observe(SmartPoseFactor, self.cameras, self.point, pixel_sigma=0.5)
        E = factor.compute_jacobians(self.cameras, self.point).E
        numeric = numerical_jacobian(
            lambda d: factor.reprojection_error(self.cameras, self.point + d), 3
        )
        np.testing.assert_allclose(E, numeric, atol=1e-5)

    def test_residual_sign_and_error(self):
        factor = observe(SmartPoseFactor, self.cameras, self.point, pixel_sigma=0.5)
        blocks = factor.compute_jacobians(self.cameras, self.point)
        errors = factor.reprojection_error(self.cameras, self.point)
        np.testing.assert_allclose(blocks.b, -errors)
        assert blocks.f == pytest.approx(errors @ errors)
        assert factor.total_reprojection_error(self.cameras, self.point) == pytest.approx(
            0.5 * blocks.f
        )

    def test_whitening(self):
        cov = np.array([[2.0, 0.4], [0.4, 1.0]])
        noises = [GaussianNoise(covariance=cov), DiagonalNoise(sigmas=[0.5, 2.0])] * 2
        unit = observe(SmartPoseFactor, self.cameras, self.point, pixel_sigma=0.5)
        whitened = SmartPoseFactor()
        whitened.add_batch(unit.measured, unit.keys, noises)

        raw = unit.compute_jacobians(self.cameras, self.point)
        blocks = whitened.compute_jacobians(self.cameras, self.point)
        errors = whitened.reprojection_error(self.cameras, self.point)
        expected_total = 0.0
        for i, noise in enumerate(noises):
            W = noise.sqrt_information
            rows = slice(2 * i, 2 * i + 2)
            np.testing.assert_allclose(blocks.fblocks[i][1], W @ raw.fblocks[i][1], atol=1e-9)
            np.testing.assert_allclose(blocks.E[rows], W @ raw.E[rows], atol=1e-12)
            np.testing.assert_allclose(blocks.b[rows], W @ raw.b[rows], atol=1e-12)
            whitened_error = W @ errors[rows]
            expected_total += 0.5 * whitened_error @ whitened_error
        assert whitened.total_reprojection_error(self.cameras, self.point) == pytest.approx(
            expected_total
        )
        assert blocks.f == pytest.approx(2.0 * expected_total)

    def test_compute_ep(self):
        cov = np.array([[2.0, 0.4], [0.4, 1.0]])
        factor = observe(
            SmartPoseFactor, self.cameras, self.point, noise=GaussianNoise(covariance=cov)
        )
        E, Q = factor.compute_ep(self.cameras, self.point)
        blocks = factor.compute_jacobians(self.cameras, self.point)
        np.testing.assert_allclose(E, blocks.E)
        np.testing.assert_allclose(Q, np.linalg.inv(E.T @ E), rtol=1e-9, atol=1e-12)

    def test_dense_variant(self):
        factor = observe(SmartCameraFactor, self.cameras, self.point, pixel_sigma=0.5)
        F, E, Q, b, f = factor.compute_jacobians_dense(self.cameras, self.point, lambda_=0.1)
        assert F.shape == (8, 44)
        blocks, Q_sparse = factor.compute_jacobians_with_covariance(
            self.cameras, self.point, lambda_=0.1
        )
        np.testing.assert_allclose(F, build_full_f(blocks.fblocks))
        np.testing.assert_allclose(Q, Q_sparse)
        Gs, gs = schur_complement(blocks.fblocks, E, Q, b)
        hessian = factor.create_hessian_factor(self.cameras, self.point, lambda_=0.1)
        for G_dense, G in zip(Gs, hessian.Gs):
            np.testing.assert_allclose(G, G_dense, atol=1e-8)
        assert hessian.constant_term() == pytest.approx(f)

    def test_camera_count_mismatch(self):
        factor = observe(SmartPoseFactor, self.cameras, self.point)
        with pytest.raises(ValueError):
            factor.compute_jacobians(self.cameras[:3], self.point)
        with pytest.raises(ValueError):
            factor.linearize(self.cameras[:3], self.point)

    def test_empty_factor(self):
        with pytest.raises(ValueError):
            SmartPoseFactor().compute_jacobians([], self.point)

    def test_negative_lambda(self):
        factor = observe(SmartPoseFactor, self.cameras, self.point)
        with pytest.raises(ValueError):
            factor.create_hessian_factor(self.cameras, self.point, lambda_=-1.0)
        with pytest.raises(ValueError):
            LinearizationParams(lambda_=-1.0)


class TestEquivalentOutputs:
    @classmethod
    def setup_class(self):
        self.point = np.array([0.2, -0.3, 0.4])
        self.cameras = ring_cameras(4)
        self.factor = observe(SmartPoseFactor, self.cameras, self.point, pixel_sigma=1.0)
        self.rng = np.random.default_rng(5)

    def test_cost_models_agree(self):
        factors = [
            self.factor.create_hessian_factor(self.cameras, self.point),
            self.factor.create_implicit_schur_factor(self.cameras, self.point),
            self.factor.create_jacobian_q_factor(self.cameras, self.point),
            self.factor.create_jacobian_svd_factor(self.cameras, self.point),
        ]
        zero = np.zeros(24)
        for _ in range(20):
            delta = 1e-2 * self.rng.normal(size=24)
            changes = [factor.error(delta) - factor.error(zero) for factor in factors]
            for change in changes[1:]:
                assert abs(change - changes[0]) <= 1e-6 * max(1.0, abs(changes[0]))

    def test_eliminated_cost_at_zero(self):
        implicit = self.factor.create_implicit_schur_factor(self.cameras, self.point)
        svd = self.factor.create_jacobian_svd_factor(self.cameras, self.point)
        jacobian_q = self.factor.create_jacobian_q_factor(self.cameras, self.point)
        assert implicit.error(np.zeros(24)) == pytest.approx(svd.error(np.zeros(24)))
        assert jacobian_q.error(np.zeros(24)) == pytest.approx(svd.error(np.zeros(24)))

    def test_linearize_modes(self):
        expected_types = {
            LinearizationMode.HESSIAN: RegularHessianFactor,
            LinearizationMode.IMPLICIT_SCHUR: ImplicitSchurFactor,
            LinearizationMode.JACOBIAN_Q: JacobianFactorQ,
            LinearizationMode.JACOBIAN_SVD: JacobianFactorSVD,
        }
        for mode, factor_type in expected_types.items():
            result = self.factor.linearize(self.cameras, self.point, mode=mode)
            assert result.ok
            assert result.failure is None
            assert isinstance(result.factor, factor_type)

        result = self.factor.linearize(
            self.cameras, self.point, params=LinearizationParams(mode="implicit_schur")
        )
        assert isinstance(result.factor, ImplicitSchurFactor)
        assert result.mode == LinearizationMode.IMPLICIT_SCHUR

    def test_linearize_values(self):
        values = CameraValues()
        for key, camera in zip(keys(4), self.cameras):
            values.insert(key, camera.pose, camera.calibration)
        result = self.factor.linearize_values(values, self.point)
        direct = self.factor.create_hessian_factor(self.cameras, self.point)
        np.testing.assert_allclose(result.factor.information(), direct.information())


class TestCheirality:
    @classmethod
    def setup_class(self):
        self.cameras = ring_cameras(3)
        self.point = np.zeros(3)
        self.factor = observe(SmartPoseFactor, self.cameras, self.point)
        # just behind the second camera, still in front of the others
        self.behind = 1.05 * self.cameras[1].pose.translation

    def test_raises_with_index_and_key(self):
        with pytest.raises(CheiralityError) as excinfo:
            self.factor.compute_jacobians(self.cameras, self.behind)
        assert excinfo.value.index == 1
        assert excinfo.value.key == Key("X1")
        assert excinfo.value.depth < 0.0
        with pytest.raises(CheiralityError):
            self.factor.reprojection_error(self.cameras, self.behind)

    def test_linearize_reports_failure(self):
        for mode in LinearizationMode:
            result = self.factor.linearize(self.cameras, self.behind, mode=mode)
            assert not result.ok
            assert result.factor is None
            assert result.failure == FailureKind.CHEIRALITY
            assert "X1" in result.message


class TestScenarios:
    @classmethod
    def setup_class(self):
        self.point = np.array([0.0, 0.0, 5.0])
        self.stereo = stereo_cameras()

    def test_single_view(self):
        camera = PinholeCamera()
        factor = SmartPoseFactor()
        factor.add([0.0, 0.0], Key("X0"), unit_noise())

        blocks = factor.compute_jacobians([camera], self.point)
        _, H_pose, H_point, _ = camera.project(self.point, compute_jacobians=True)
        np.testing.assert_allclose(blocks.b, [0.0, 0.0])
        assert blocks.f == 0.0
        np.testing.assert_allclose(blocks.fblocks[0][1], H_pose)
        np.testing.assert_allclose(blocks.E, H_point)

        # one view leaves the point depth unobserved
        with pytest.raises(DegenerateReductionError):
            factor.create_hessian_factor([camera], self.point)
        result = factor.linearize([camera], self.point)
        assert result.failure == FailureKind.DEGENERATE

        lambda_ = 1e-3
        hessian = factor.create_hessian_factor([camera], self.point, lambda_=lambda_)
        E = blocks.E
        Q = np.linalg.inv(E.T @ E + lambda_ * np.eye(3))
        expected = H_pose.T @ (np.eye(2) - E @ Q @ E.T) @ H_pose
        np.testing.assert_allclose(hessian.information(), expected, atol=1e-12)
        assert numerical_rank(hessian.information()) == 2
        np.testing.assert_allclose(hessian.linear_term(), 0.0)

    def test_single_view_off_axis(self):
        # rounding leaves E'E with a tiny but possibly positive eigenvalue
        camera = PinholeCamera(calibration=Calibration(fx=500.0, fy=480.0, u0=320.0, v0=240.0))
        point = np.array([-2.0, 0.5, 7.0])
        factor = observe(SmartPoseFactor, [camera], point)

        with pytest.raises(DegenerateReductionError):
            factor.create_hessian_factor([camera], point)
        for mode in [
            LinearizationMode.HESSIAN,
            LinearizationMode.IMPLICIT_SCHUR,
            LinearizationMode.JACOBIAN_Q,
        ]:
            result = factor.linearize([camera], point, mode=mode)
            assert not result.ok
            assert result.factor is None
            assert result.failure == FailureKind.DEGENERATE

        result = factor.linearize([camera], point, params=LinearizationParams(lambda_=1e-3))
        assert result.ok

    def test_zero_baseline(self):
        calibration = Calibration(fx=500.0, fy=480.0, u0=320.0, v0=240.0)
        cameras = [
            PinholeCamera(Pose3D(), calibration),
            PinholeCamera(Pose3D(rotation=get_rotation_matrix_from_yaw(0.3)), calibration),
        ]
        point = np.array([0.4, 0.1, 5.0])
        factor = observe(SmartPoseFactor, cameras, point)

        for mode in LinearizationMode:
            result = factor.linearize(cameras, point, mode=mode)
            assert result.factor is None
            assert result.failure == FailureKind.DEGENERATE
        with pytest.raises(DegenerateReductionError):
            factor.compute_jacobians_svd(cameras, point)

    def test_stereo(self):
        factor = observe(SmartPoseFactor, self.stereo, self.point)
        hessian = factor.create_hessian_factor(self.stereo, self.point)
        H = hessian.information()
        assert H.shape == (12, 12)
        np.testing.assert_allclose(H, H.T, atol=1e-9)
        np.testing.assert_allclose(hessian.linear_term(), 0.0, atol=1e-12)
        assert hessian.constant_term() == pytest.approx(0.0, abs=1e-20)
        # four residuals minus three point coordinates
        assert numerical_rank(H) == 1

    @pytest.mark.parametrize("lambda_", [0.0, 1e-4, 1.0])
    def test_lambda_sweep(self, lambda_):
        factor = observe(SmartPoseFactor, self.stereo, self.point)
        blocks, Q = factor.compute_jacobians_with_covariance(self.stereo, self.point, lambda_)
        EtE = blocks.E.T @ blocks.E
        np.testing.assert_allclose(Q, np.linalg.inv(EtE + lambda_ * np.eye(3)), rtol=1e-9, atol=1e-9)

        if lambda_ > 0.0:
            _, Q_diag = factor.compute_jacobians_with_covariance(
                self.stereo, self.point, lambda_, diagonal_damping=True
            )
            expected = np.linalg.inv(EtE + lambda_ * np.diag(np.diag(EtE)))
            np.testing.assert_allclose(Q_diag, expected, rtol=1e-9, atol=1e-9)

    def test_sensor_offset(self):
        body_P_sensor = Pose3D(
            rotation=get_rotation_matrix_from_yaw(np.pi / 2), translation=[0.1, -0.2, 0.05]
        )
        sensor_P_body = body_P_sensor.inverse()
        body_cameras = [
            PinholeCamera(camera.pose.compose(sensor_P_body), camera.calibration)
            for camera in self.stereo
        ]

        plain = observe(SmartPoseFactor, self.stereo, self.point, pixel_sigma=0.01, seed=3)
        offset = SmartPoseFactor(body_P_sensor=body_P_sensor)
        offset.add_batch(plain.measured, plain.keys, plain.noise)

        np.testing.assert_allclose(
            offset.reprojection_error(body_cameras, self.point),
            plain.reprojection_error(self.stereo, self.point),
            atol=1e-12,
        )
        plain_blocks = plain.compute_jacobians(self.stereo, self.point)
        offset_blocks = offset.compute_jacobians(body_cameras, self.point)
        np.testing.assert_allclose(offset_blocks.b, plain_blocks.b, atol=1e-12)
        assert offset_blocks.f == pytest.approx(plain_blocks.f)

        adjoint = sensor_P_body.adjoint_matrix()
        for (_, F_body), (_, F_sensor) in zip(offset_blocks.fblocks, plain_blocks.fblocks):
            np.testing.assert_allclose(F_body, F_sensor @ adjoint, atol=1e-12)

        numeric = numerical_jacobian(
            lambda d: offset.reprojection_error(retract_camera(body_cameras, 0, d), self.point),
            6,
        )
        np.testing.assert_allclose(offset_blocks.fblocks[0][1], numeric[:2], atol=1e-6)

    def test_svd_equivalence(self):
        factor = observe(SmartPoseFactor, self.stereo, self.point, pixel_sigma=0.01, seed=4)
        blocks, Enull = factor.compute_jacobians_svd(self.stereo, self.point)
        assert Enull.shape == (4, 1)
        A = Enull.T @ build_full_f(blocks.fblocks)
        rhs = Enull.T @ blocks.b
        hessian = factor.create_hessian_factor(self.stereo, self.point)
        np.testing.assert_allclose(A.T @ A, hessian.information(), atol=1e-9)
        np.testing.assert_allclose(A.T @ rhs, hessian.linear_term(), atol=1e-9)

    def test_implicit_matches_dense(self):
        factor = observe(SmartPoseFactor, self.stereo, self.point, pixel_sigma=0.01, seed=6)
        H = factor.create_hessian_factor(self.stereo, self.point).information()
        implicit = factor.create_implicit_schur_factor(self.stereo, self.point)
        rng = np.random.default_rng(6)
        for _ in range(100):
            v = rng.normal(size=12)
            v /= np.linalg.norm(v)
            np.testing.assert_allclose(implicit.multiply_hessian(v), H @ v, atol=1e-9)

    def test_two_views_ninety_degrees(self):
        origin = np.zeros(3)
        cameras = [
            PinholeCamera(look_at([5.0, 0.0, 0.0], origin)),
            PinholeCamera(look_at([0.0, 5.0, 0.0], origin)),
        ]
        factor = observe(SmartPoseFactor, cameras, origin)
        H = factor.create_hessian_factor(cameras, origin).information()
        assert H.shape == (12, 12)
        assert numerical_rank(H) == 1

        result = factor.linearize(cameras, origin, params=LinearizationParams(lambda_=1e-6))
        assert result.ok
        damped = result.factor.information()
        assert np.all(np.isfinite(damped))
        np.testing.assert_allclose(damped, damped.T, atol=1e-9)


if __name__ == "__main__":
    sys.exit(pytest.main(['--capture=no', __file__]))
